"""
Tests for the path helpers.
"""

from sequence import path


class TestTrim:
    """Tests for trim."""

    def test_missing_value(self):
        """Missing value trims to an empty string."""
        assert path.trim() == ""
        assert path.trim(None) == ""

    def test_strips_whitespace_and_slashes(self):
        """Surrounding whitespace and slash runs are removed."""
        assert path.trim("  /foo/bar//  ") == "foo/bar"
        assert path.trim("///") == ""

    def test_keeps_inner_slashes(self):
        """Only leading and trailing slashes are removed."""
        assert path.trim("/foo/bar/baz/") == "foo/bar/baz"

    def test_keeps_percent_encoding(self):
        """Percent-encoded characters are never decoded."""
        assert path.trim("/users/bob%2Falice/") == "users/bob%2Falice"
        assert path.trim("%20foo%20") == "%20foo%20"


class TestJoin:
    """Tests for join."""

    def test_no_segment(self):
        """Joining nothing gives an empty path."""
        assert path.join() == ""

    def test_joins_segments(self):
        """Segments are trimmed and joined with slashes."""
        assert path.join("/users/", "bob", "/profile") == "users/bob/profile"

    def test_flattens_nested_segments(self):
        """Lists of segments can be nested."""
        assert path.join("/a/", ["b", ["/c/", ("d",)]]) == "a/b/c/d"

    def test_drops_empty_segments(self):
        """Empty or blank segments are dropped."""
        assert path.join("a", "", "  ", "/", None, "b") == "a/b"

    def test_keeps_percent_encoding(self):
        """Encoded separators survive joining."""
        assert path.join(["rooms", "a%2Fb"]) == "rooms/a%2Fb"

    def test_accepts_a_joined_path(self):
        """A pre-joined path is normalized."""
        assert path.join(" /users/bob/ ") == "users/bob"


class TestSplit:
    """Tests for split."""

    def test_split(self):
        """Paths are split into their segments."""
        assert path.split("/users//bob/") == ["users", "bob"]
        assert path.split("") == []
