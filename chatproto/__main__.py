from .run_node import main

main()
