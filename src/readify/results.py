def ok(msg: str, **data):    return {"ok": True,  "message": msg, **({"data": data} if data else {})}
def err(msg: str, code="", **data): return {"ok": False, "message": msg, "code": code, **({"data": data} if data else {})}
