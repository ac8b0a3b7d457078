def handler():
    raise Exception("403: nope")
