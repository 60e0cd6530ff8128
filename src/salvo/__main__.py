"""
Salvo CLI Entry Point

Allows running the package as a module: python -m salvo
"""

from salvo.cli import main

if __name__ == "__main__":
    main()
