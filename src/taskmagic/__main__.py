from taskmagic.cli import main

main()
