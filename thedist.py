# -------
# Launcher for running straight from a checkout: python thedist.py --port 8080
# -------

from distserve.cli import start

if __name__ == "__main__":
    start()
