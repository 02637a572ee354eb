from brainsync.cli import main

main()
