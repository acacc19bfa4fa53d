from devsphere.app import main

main()
