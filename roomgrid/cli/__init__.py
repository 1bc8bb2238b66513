"""
Command-line interface built on Typer.
"""
