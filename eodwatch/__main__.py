from eodwatch.main import main

main()
