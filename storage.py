import copy
import json
import logging
import os

from config import DATA_FILE, DEFAULT_PIC_LIST

logger = logging.getLogger(__name__)


def _empty_state():
    return {"projects": [], "pic_list": list(DEFAULT_PIC_LIST)}


class JsonFileStorage:
    """Keeps the whole tracker state in one JSON file; every save rewrites it."""

    def __init__(self, filepath=DATA_FILE):
        self.filepath = filepath

    def load(self):
        if not os.path.exists(self.filepath):
            logger.info("No data file at %s, starting empty", self.filepath)
            return _empty_state()

        with open(self.filepath, 'r', encoding='utf-8') as f:
            data = json.load(f)

        state = _empty_state()
        state["projects"] = data.get("projects", [])
        if "pic_list" in data:
            state["pic_list"] = data["pic_list"]
        logger.info("Loaded %d projects from %s", len(state["projects"]), self.filepath)
        return state

    def save(self, state):
        with open(self.filepath, 'w', encoding='utf-8') as f:
            json.dump({"projects": state["projects"], "pic_list": state["pic_list"]}, f, indent=4)


class MemoryStorage:
    def __init__(self, state=None):
        self.state = copy.deepcopy(state) if state else _empty_state()
        self.save_count = 0

    def load(self):
        return copy.deepcopy(self.state)

    def save(self, state):
        self.state = copy.deepcopy({"projects": state["projects"], "pic_list": state["pic_list"]})
        self.save_count += 1
