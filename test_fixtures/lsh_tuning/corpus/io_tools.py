"""File helpers with renamed and lightly edited copies."""

import json


def read_json(path):
    with open(path, encoding="utf-8") as handle:
        data = json.load(handle)
    return data


def load_config(config_path):
    with open(config_path, encoding="utf-8") as stream:
        payload = json.load(stream)
    return payload


def write_lines(path, lines):
    with open(path, "w", encoding="utf-8") as handle:
        for line in lines:
            handle.write(line + "\n")
    return len(lines)


def tail(path, count):
    with open(path, encoding="utf-8") as handle:
        lines = handle.readlines()
    if count <= 0:
        return []
    return [line.rstrip("\n") for line in lines[-count:]]
