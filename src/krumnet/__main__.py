from krumnet.main import main

main()
