"""
Gallery Harvester - Main Entry Point
Collects every media item on a virtualized gallery page and downloads it
"""
import sys

if __name__ == '__main__':
    from harvester.__main__ import _launch
    sys.exit(_launch())
