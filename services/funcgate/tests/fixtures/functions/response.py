import base64

RESPONSES = {
    "empty": {},
    "nullbody": {"body": None},
    "badstatus": {"statusCode": 600, "body": "x"},
    "badheaders": {"headers": True, "body": "x"},
    "extra": {"body": "x", "cookies": []},
    "text": {"body": "hello"},
    "created": {"statusCode": 201, "headers": {"X-Count": 2, "X-Flag": True}, "body": "made"},
    "override": {
        "headers": {"Content-Type": "text/html", "Access-Control-Allow-Origin": "$"},
        "body": "<b>hi</b>",
    },
    "headernames": {"headers": {"X Space": "a", "X!bang": "b"}, "body": "x"},
    "headervalues": {"headers": {"X-Obj": {"a": 1}, "X-List": [1]}, "body": "x"},
    "image": {
        "headers": {"Content-Type": "image/png"},
        "body": {"_base64": base64.b64encode(b"PNGDATA").decode("ascii")},
    },
    "bytes": {"body": b"\x00\x01"},
}


def handler(case):
    """
    Returns a canned HTTP response object.
    @param {string} case
    @returns {object.http}
    """
    return RESPONSES[case]
