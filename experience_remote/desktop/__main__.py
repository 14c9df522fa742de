"""Run the desktop host: python -m experience_remote.desktop"""

from .app import main

if __name__ == "__main__":
    main()
