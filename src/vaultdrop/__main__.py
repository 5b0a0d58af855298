"""Run with: python -m vaultdrop"""

from .cli import main

main()
