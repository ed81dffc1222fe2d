from dfc.PARSERS.env_parser import EnvParser


def test_parse_from_string():
    content = (
        "KEY1=VALUE1\n"
        "KEY2 = VALUE2\n"
        "# This is a comment\n"
        'KEY3="VALUE3" # Trailing comment\n'
        "KEY4='VALUE4'\n"
    )
    env = EnvParser.parse_from_string(content)
    assert env['KEY1'] == 'VALUE1'
    assert env['KEY2'] == 'VALUE2'
    assert env['KEY3'] == 'VALUE3'
    assert env['KEY4'] == 'VALUE4'
    assert 'KEY5' not in env


def test_values_are_not_interpolated():
    env = EnvParser.parse_from_string("BASE=alpine\nIMAGE=${BASE}:3.19\n")
    assert env['IMAGE'] == '${BASE}:3.19'


def test_bare_key_and_export():
    env = EnvParser.parse_from_string("export VERSION=1.2\nEMPTY\n")
    assert env == {'VERSION': '1.2', 'EMPTY': ''}


def test_parse_file(tmp_path):
    path = tmp_path / "build.args"
    path.write_text("HTTP_PROXY=http://proxy:3128\n")
    assert EnvParser.parse(str(path)) == {'HTTP_PROXY': 'http://proxy:3128'}
