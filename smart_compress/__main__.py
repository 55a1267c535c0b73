from smart_compress.cli import main

main()
