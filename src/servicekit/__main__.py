from servicekit.main import main

main()
