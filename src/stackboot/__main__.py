from stackboot.cli import main

main()
