"""Collection helpers with renamed and lightly edited copies."""


def chunk(items, size):
    batches = []
    for start in range(0, len(items), size):
        batches.append(items[start : start + size])
    return batches


def split_batches(values, batch_size):
    result = []
    for offset in range(0, len(values), batch_size):
        result.append(values[offset : offset + batch_size])
    return result


def flatten(nested):
    flat = []
    for group in nested:
        for item in group:
            flat.append(item)
    return flat


def count_letters(text):
    seen = 0
    for letter in text.lower():
        if letter in "aeiou":
            seen += 1
    return seen


def dedupe(items):
    seen = set()
    unique = []
    for item in items:
        if item not in seen:
            seen.add(item)
            unique.append(item)
    return unique


def unique_in_order(values):
    visited = set()
    ordered = []
    for value in values:
        if value in visited:
            continue
        visited.add(value)
        ordered.append(value)
    return ordered
