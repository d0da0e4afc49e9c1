"""facebatch command-line interface (``facebatch`` console script)."""
