"""Test fixture with intentional duplicate functions."""


# --- Pair 1: Exact structural duplicate (different names/vars) ---


def calculate_sum(items):
    """Sum up all the items."""
    total = 0
    for item in items:
        total += item
    return total


def compute_total(values):
    """Add all values together."""
    result = 0
    for value in values:
        result += value
    return result


# --- Pair 2: Reordered independent statements ---


def build_user(record):
    """Normalise a user record."""
    name = record["name"].strip().title()
    email = record["email"].strip().lower()
    if not email:
        email = None
    return {"name": name, "email": email}


def make_account(payload):
    """Normalise an account payload."""
    mail = payload["email"].strip().lower()
    label = payload["name"].strip().title()
    if not mail:
        mail = None
    return {"name": label, "email": mail}


# --- Pair 3: Near duplicate (minor logic variation) ---


def validate_email(email):
    """Check if email looks valid."""
    if "@" not in email:
        return False
    parts = email.split("@")
    if len(parts) != 2:
        return False
    domain = parts[1]
    if "." not in domain:
        return False
    return True


def check_email_format(address):
    """Verify email format."""
    if "@" not in address:
        return False
    segments = address.split("@")
    if len(segments) != 2:
        return False
    host = segments[1]
    if "." not in host:
        return False
    return len(host) > 3


# --- Distinctly different (should NOT match each other) ---


def fibonacci(n):
    """Generate fibonacci sequence."""
    if n <= 0:
        return []
    if n == 1:
        return [0]
    seq = [0, 1]
    for _ in range(2, n):
        seq.append(seq[-1] + seq[-2])
    return seq


def parse_csv_line(line):
    """Parse a single CSV line respecting quotes."""
    fields = []
    current = ""
    in_quotes = False
    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            fields.append(current.strip())
            current = ""
        else:
            current += char
    fields.append(current.strip())
    return fields
