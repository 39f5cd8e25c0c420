from yunhu_bridge.domain import elements as el

def test_parse_host_dict_tree():
    tree = {"type": "p", "children": [
        "hello ",
        {"type": "b", "children": [{"type": "text", "attrs": {"content": "world"}}]},
        {"type": "at", "attrs": {"id": "u1", "name": "Alice"}},
        {"type": "img", "attrs": {"url": "https://i.test/a.png"}},
        {"type": "h2", "children": ["T"]},
    ]}
    [p] = el.parse(tree)
    assert isinstance(p, el.Paragraph)
    text, bold, at, img, h = p.children
    assert text == el.Text("hello ")
    assert bold.style is el.Style.bold and bold.children == [el.Text("world")]
    assert at.id == "u1" and at.name == "Alice"
    assert img == el.Media(el.MediaKind.image, "https://i.test/a.png")
    assert h.level == 2

def test_unknown_tags_keep_their_children():
    [node] = el.parse({"type": "spoiler", "attrs": {"x": 1}, "children": ["secret"]})
    assert isinstance(node, el.Unknown)
    assert node.tag == "spoiler" and node.children == [el.Text("secret")]

def test_forward_and_platform_tags():
    [msg] = el.parse({"type": "message", "attrs": {"forward": True}, "children": []})
    assert msg.forward
    [md] = el.parse({"type": "yunhu:markdown", "children": ["# x"]})
    assert isinstance(md, el.MarkdownBlock)

def test_parse_mixed_inputs():
    assert el.parse(None) == []
    assert el.parse("") == []
    assert el.parse(["a", el.Break(), "b"]) == [el.Text("a"), el.Break(), el.Text("b")]

def test_plain_text():
    nodes = [el.Text("hi "), el.At(id="u1", name="Alice"), el.Text(" and "), el.At(type="all")]
    assert el.plain_text(nodes) == "hi @Alice and @全体成员"
