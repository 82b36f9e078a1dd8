import uuid

def gen_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def gen_lease_id() -> str:
    return uuid.uuid4().hex
