"""Text helpers with renamed and lightly edited copies."""


def slugify(title):
    words = title.lower().split()
    cleaned = [word.strip(".,!?") for word in words]
    return "-".join(word for word in cleaned if word)


def make_slug(heading):
    parts = heading.lower().split()
    stripped = [part.strip(".,!?") for part in parts]
    return "-".join(part for part in stripped if part)


def count_vowels(text):
    total = 0
    for char in text.lower():
        if char in "aeiou":
            total += 1
    return total


def wrap_lines(text, width):
    lines = []
    current = ""
    for word in text.split():
        if len(current) + len(word) + 1 > width:
            lines.append(current)
            current = word
        else:
            current = f"{current} {word}".strip()
    if current:
        lines.append(current)
    return lines
