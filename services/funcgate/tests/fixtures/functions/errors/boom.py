def handler():
    raise RuntimeError("kaboom")
