def handler():
    raise Exception({"code": 1})
