import pytest

from aquabook.permissions import InvalidPermissionError, parse_perms


def parse(s):
    return list(parse_perms(s))


def test_parse_perms_plain():
    assert parse("Hello @Perm{read} world") == [
        (range(6, 17), '<span class="perm read">R</span>')
    ]


def test_parse_perms_lost():
    assert parse("Hello @Perm[lost]{read} world") == [
        (
            range(6, 23),
            '<span class="perm-diff-sub-container"><div class="perm-diff-sub"></div>'
            '<span class="perm read">R</span></span>',
        )
    ]


def test_parse_perms_fail():
    with pytest.raises(InvalidPermissionError):
        parse("@Perm{not-a-perm}")


def test_parse_perms_gained():
    assert parse("@Perm[gained]{write}") == [
        (
            range(0, 20),
            '<span><span class="perm-diff-add">+</span>'
            '<span class="perm write">W</span></span>',
        )
    ]


def test_parse_perms_missing():
    [(_, html)] = parse("@Perm[missing]{own}")
    assert html == '<span class="perm missing own">O</span>'


def test_parse_perms_unknown_option():
    with pytest.raises(InvalidPermissionError):
        parse("@Perm[other]{read}")


def test_parse_perms_multiple_and_none():
    content = "@Perm{flow} and @Perm{write}"
    result = parse(content)
    assert [content[r.start:r.stop] for r, _ in result] == ["@Perm{flow}", "@Perm{write}"]
    assert parse("no markers here") == []