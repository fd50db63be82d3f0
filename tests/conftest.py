"""Shared fixtures: a scripted text generator, outlines and sample chapters."""

import pytest

from novel_loop.models import OutlineChapter, OutlineDocument, OutlineVolume


class FakeGenerator:
    """Scripted TextGenerator.

    Responses are returned in order; an Exception instance in the script is
    raised instead of returned. Every call is recorded.
    """

    def __init__(self, responses=None, default=""):
        self.responses = list(responses or [])
        self.default = default
        self.calls = []

    def generate(self, system: str, prompt: str, temperature: float = 0.7) -> str:
        self.calls.append({"system": system, "prompt": prompt, "temperature": temperature})
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def fake_generator():
    return FakeGenerator


def make_outline(chapters: int = 10, per_volume: int = 5, milestones: int = 3) -> OutlineDocument:
    volumes = []
    for start in range(1, chapters + 1, per_volume):
        end = min(chapters, start + per_volume - 1)
        volumes.append(OutlineVolume(
            title=f"Volume {len(volumes) + 1}",
            start_chapter=start,
            end_chapter=end,
            goal="Escape the city",
            chapters=tuple(
                OutlineChapter(index=i, title=f"The Gate Opens {i}", goal=f"Ren faces trial {i}", hook="A knock")
                for i in range(start, end + 1)
            ),
        ))
    return OutlineDocument(
        total_chapters=chapters,
        target_word_count=chapters * 3000,
        main_goal="Ren reclaims the throne",
        milestones=tuple(f"Milestone {i}" for i in range(milestones)),
        volumes=tuple(volumes),
    )


@pytest.fixture
def sample_outline():
    return make_outline()


@pytest.fixture
def english_chapter():
    """A mid-book chapter that passes the structural checks."""
    paragraphs = [
        "Chapter 12: The Broken Gate",
        '"Hold the line," Ren said, his breath fogging in the cold air. '
        + "The torches threw a dim glow across the wet stones. " * 4,
        '"They are coming from the east," Mira answered, her eyes narrowed at the dark road. '
        + "Rain hammered the walls and her fingertips went numb on the bowstring. " * 4,
        "Ren drew his blade and felt his heartbeat slow. "
        + "Somewhere beyond the gate a horn sounded, low and rough, and the ground trembled. " * 4,
        '"Then we go east," he said. "Before dawn."',
        "Mira nodded. The horn sounded again, closer this time, and somebody at the gate screamed.",
    ]
    body = "\n\n".join(paragraphs)
    filler = "\n\n".join(
        "The soldiers moved along the wall, their eyes on the road, the cold biting at every breath. " * 4
        for _ in range(26)
    )
    return f"{body}\n\n{filler}\n\nThen the gate split open, and a hand reached through the gap."


@pytest.fixture
def chinese_chapter():
    return (
        "第十二章 破门\n\n"
        "“守住！”任远低声喝道，呼吸在冷风中化作白雾。火把的微光映在湿冷的石头上。\n\n"
        "“他们从东边来了。”米拉眯起眼睛，指尖在弓弦上冻得发麻。\n\n"
        "任远拔出长剑，心跳慢慢平静下来。远处传来一声号角，大地微微颤抖。\n\n"
        "“那我们往东走，”他说，“天亮之前。”\n\n"
        "号角声再次响起，城门外传来一声惨叫。"
    )


@pytest.fixture
def outline_factory():
    return make_outline
