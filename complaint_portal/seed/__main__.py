from complaint_portal.seed.importer import main

main()
