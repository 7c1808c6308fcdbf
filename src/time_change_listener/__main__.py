"""time-change-listener 入口点。

支持: python -m time_change_listener
"""

from .app import main

if __name__ == "__main__":
    main()
