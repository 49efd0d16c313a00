from dbproxy.main import main

main()
