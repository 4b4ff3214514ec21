#!/usr/bin/env python3
"""
Haplotype Association Mapping of one phenotype against one genotype file
"""
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from haplomap.cli.run import main

if __name__ == "__main__":
    sys.exit(main())
