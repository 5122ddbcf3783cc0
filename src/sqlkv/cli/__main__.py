from sqlkv.cli.main import main

main()
