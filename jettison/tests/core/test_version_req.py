import pytest

from jettison.version_req import Version, VersionReq, matches


@pytest.mark.parametrize(
	"req, version, expected",
	[
		("1.2.3", "1.2.3", True),
		("1.2.3", "1.9.0", True),
		("1.2.3", "2.0.0", False),
		("1.2.3", "1.2.2", False),
		("^0.2.3", "0.2.9", True),
		("^0.2.3", "0.3.0", False),
		("^0.0.3", "0.0.3", True),
		("^0.0.3", "0.0.4", False),
		("^0", "0.9.9", True),
		("0.1", "0.1.7", True),
		("0.1", "0.2.0", False),
		("~1.2.3", "1.2.9", True),
		("~1.2.3", "1.3.0", False),
		("~1", "1.8.0", True),
		("=1.2.3", "1.2.4", False),
		("=1.2", "1.2.7", True),
		(">1.2.3", "1.2.4", True),
		(">1.2", "1.2.9", False),
		(">=1.2.3", "1.2.3", True),
		("<2", "1.99.0", True),
		("<2", "2.0.0", False),
		("<=1.2", "1.2.9", True),
		(">= 1.2, < 1.5", "1.4.0", True),
		(">= 1.2, < 1.5", "1.5.0", False),
		("*", "3.4.5", True),
		("1.*", "1.4.0", True),
		("1.*", "2.0.0", False),
		("1.2.x", "1.2.8", True),
		("1.2.x", "1.3.0", False),
	],
)
def test_requirement_table(req, version, expected):
	assert matches(req, version) is expected


def test_prerelease_needs_opt_in():
	assert not matches("^1.0.0", "1.1.0-alpha.1")
	assert not matches("*", "1.0.0-rc.1")
	assert matches("^1.0.0-alpha.1", "1.0.0-alpha.2")
	assert matches("^1.0.0-alpha.1", "1.0.0")
	assert not matches("^1.0.0-alpha.1", "1.0.1-alpha.1")


def test_version_ordering():
	assert Version.parse("1.0.0-alpha") < Version.parse("1.0.0-alpha.1")
	assert Version.parse("1.0.0-alpha.1") < Version.parse("1.0.0-beta")
	assert Version.parse("1.0.0-2") < Version.parse("1.0.0-10")
	assert Version.parse("1.0.0-rc.1") < Version.parse("1.0.0")
	assert Version.parse("1.2.3") < Version.parse("1.10.0")


def test_version_parts_and_str():
	v = Version.parse("1.2.3-rc.1+build.5")
	assert (v.major, v.minor, v.patch) == (1, 2, 3)
	assert v.pre == ("rc", "1")
	assert v.build == ("build", "5")
	assert v.is_prerelease
	assert str(v) == "1.2.3-rc.1+build.5"


def test_bare_star_has_no_comparators():
	assert VersionReq.parse("*").comparators == ()


@pytest.mark.parametrize("text", ["1.2", "1", "1.x.0"])
def test_versions_must_be_complete(text):
	with pytest.raises(ValueError):
		Version.parse(text)


def test_number_after_wildcard_is_rejected():
	with pytest.raises(ValueError, match="after wildcard"):
		VersionReq.parse("1.*.3")


def test_prerelease_on_partial_requirement_is_rejected():
	with pytest.raises(ValueError, match="requires a full"):
		VersionReq.parse("^1.2-beta")
