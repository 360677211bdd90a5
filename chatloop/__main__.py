from chatloop.cli.app import main

main()
