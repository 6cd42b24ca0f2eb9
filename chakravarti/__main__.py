from chakravarti.cli import main

main()
