from frailearn.cli.main import main

main()
