#!/usr/bin/env python3
"""
Tax Rule Engine - Entry Point

Selects the tax rules that apply to a sale and computes the tax owed
under percentage, fixed-amount, tiered and progressive rules.

Usage:
    python main.py calculate --rules examples/sample_rules.json --tenant store-1 --amount 1500 --country SA
    python main.py calculate --rules examples/sample_rules.json --tenant store-1 --file examples/sample_contexts.csv
    python main.py rules --rules examples/sample_rules.json --tenant store-1 --all
    python main.py applicable --rules examples/sample_rules.json --tenant store-1 --amount 200 --country SA --product-type digital
    python main.py validate --rules examples/sample_rules.json
"""

from tax_rules.cli import main

if __name__ == "__main__":
    main()
