from datetime import datetime


def get_clock():
    """Dependency: the clock services read 'now' from."""
    return datetime.now
