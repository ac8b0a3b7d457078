def handler(unit, opts=None):
    """
    Echoes a unit and its options.
    @param {enum} unit
        ["metric", "m"]
        ["imperial", {"length": "ft"}]
    @param {?object} opts
    @ {string} label
    @ {integer} count
    @returns {object}
    """
    return {"unit": unit, "opts": opts}
