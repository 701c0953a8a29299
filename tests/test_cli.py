import copy
import io
import subprocess
import sys
from pathlib import Path

import pytest

from aquabook.cache import CACHE_PATH, Cache
from aquabook.cli import apply_replacements, main, process_book
from aquabook.permissions import parse_perms
from aquabook.preprocessor import AquascopePreprocessor


class CountingRunner:
    def __init__(self):
        self.calls = 0

    def __call__(self, args, **kwargs):
        args = [str(arg) for arg in args]
        if args[:2] == ["cargo", "new"]:
            (Path(kwargs["cwd"]) / args[-1] / "src").mkdir(parents=True)
            return subprocess.CompletedProcess(args, 0)
        self.calls += 1
        return subprocess.CompletedProcess(args, 0, stdout=b'{"steps":[]}', stderr=b"")


def mk_contents(x):
    return f"""
```aquascope,interpreter
fn main() {{
  let x = {x};
}}
```
    """


def make_book(content):
    return {
        "sections": [
            {"Chapter": {"name": "Chapter 1", "content": content, "sub_items": []}},
        ]
    }


def compile_book(root, book, runner):
    pre = AquascopePreprocessor(
        Path("/sysroot"), Path("/libdir"), Cache.load(root / CACHE_PATH), runner
    )
    result = process_book(copy.deepcopy(book), pre)
    pre.save_cache()
    return result


def test_cache(tmp_path):
    runner = CountingRunner()
    cache_path = tmp_path / CACHE_PATH

    compile_book(tmp_path, make_book(mk_contents("0")), runner)
    cache_contents = cache_path.read_bytes()
    assert cache_contents
    assert runner.calls == 1

    compile_book(tmp_path, make_book(mk_contents("0")), runner)
    assert cache_path.read_bytes() == cache_contents
    assert runner.calls == 1

    compile_book(tmp_path, make_book(mk_contents("1")), runner)
    assert cache_path.read_bytes() != cache_contents
    assert runner.calls == 2


def test_process_book_replaces_nested_chapters(tmp_path):
    book = {
        "sections": [
            {
                "Chapter": {
                    "name": "Top",
                    "content": "plain",
                    "sub_items": [
                        {"Chapter": {"name": "Inner", "content": "Hello @Perm{read} world", "sub_items": []}},
                    ],
                }
            },
            "Separator",
        ]
    }
    result = compile_book(tmp_path, book, CountingRunner())
    top = result["sections"][0]["Chapter"]
    assert top["content"] == "plain"
    assert top["sub_items"][0]["Chapter"]["content"] == (
        'Hello <span class="perm read">R</span> world'
    )
    assert result["sections"][1] == "Separator"


def test_process_book_embeds_block(tmp_path):
    result = compile_book(tmp_path, make_book(mk_contents("0")), CountingRunner())
    content = result["sections"][0]["Chapter"]["content"]
    assert "```aquascope" not in content
    assert 'class="aquascope-embed"' in content


def test_apply_replacements_with_perms():
    s = "Hello @Perm[lost]{read} world"
    out = apply_replacements(s, list(parse_perms(s)))
    assert out == (
        'Hello <span class="perm-diff-sub-container"><div class="perm-diff-sub"></div>'
        '<span class="perm read">R</span></span> world'
    )


def test_apply_replacements_without_replacements():
    assert apply_replacements("unchanged", []) == "unchanged"


def test_apply_replacements_rejects_overlap():
    with pytest.raises(ValueError):
        apply_replacements("abcdef", [(range(0, 3), "x"), (range(2, 4), "y")])


def test_main_supports_html():
    assert main(["supports", "html"]) == 0


def test_main_does_not_support_other_renderers():
    assert main(["supports", "latex"]) == 1


def test_main_rejects_invalid_input(monkeypatch, capsys):
    monkeypatch.setattr(sys, "stdin", io.StringIO("not json"))
    assert main([]) == 1
    assert "Error" in capsys.readouterr().err