"""
Main entry point for the VeriMed CLI.

This script provides a command-line interface to collect labeled medicine
photos, train and deploy the scorers, and scan medicines for counterfeit signs.
For example:

  # Store a labeled photo
  python main.py collect box.jpg --modality packaging --authentic --quality 8

  # Train and deploy the packaging scorer
  python main.py train packaging --epochs 20

  # Scan a medicine
  python main.py analyze --packaging box.jpg --pill pill.jpg

For more information on available commands and options, run:
  python main.py --help
"""

from verimed.interface import cli

if __name__ == '__main__':
    cli()
