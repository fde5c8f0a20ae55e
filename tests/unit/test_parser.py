"""Tests for response classification and the parenthesized-list grammar."""

import pytest

from imapcore.errors import ProtocolError
from imapcore.models import BodyPart, Multipart
from imapcore.protocol.codec import RawResponse
from imapcore.protocol.parser import (
    ContinuationRequest,
    TaggedResponse,
    UntaggedResponse,
    merge_fetch,
    parse_body_structure,
    parse_envelope,
    parse_list,
    parse_response,
    parse_values,
)

ENVELOPE = (
    b'("Wed, 17 Jul 1996 02:23:25 -0700 (PDT)" "IMAP4rev1 WG mtg summary and minutes" '
    b'(("Terry Gray" NIL "gray" "cac.washington.edu")) '
    b'(("Terry Gray" NIL "gray" "cac.washington.edu")) '
    b'(("Terry Gray" NIL "gray" "cac.washington.edu")) '
    b'((NIL NIL "imap" "cac.washington.edu")) '
    b'((NIL NIL "minutes" "CNRI.Reston.VA.US")("John Klensin" NIL "KLENSIN" "MIT.EDU")) '
    b'NIL NIL "<B27397-0100000@cac.washington.edu>")'
)

NESTED_MULTIPART = (
    b'((("TEXT" "PLAIN" ("CHARSET" "UTF-8") NIL NIL "QUOTED-PRINTABLE" 120 4 NIL NIL NIL NIL)'
    b'("TEXT" "HTML" ("CHARSET" "UTF-8") NIL NIL "QUOTED-PRINTABLE" 450 10 NIL NIL NIL NIL)'
    b' "ALTERNATIVE" ("BOUNDARY" "alt") NIL NIL NIL)'
    b'("IMAGE" "PNG" ("NAME" "logo.png") "<logo@example.org>" NIL "BASE64" 2048 NIL'
    b' ("ATTACHMENT" ("FILENAME" "logo.png")) NIL NIL)'
    b' "MIXED" ("BOUNDARY" "mix") NIL NIL NIL)'
)


def test_tagged_completion_with_response_code():
    response = parse_response(b"A0002 OK [READ-WRITE] SELECT completed")
    assert response == TaggedResponse(
        tag="A0002", status="OK", text="SELECT completed", code="READ-WRITE", code_data=None
    )


def test_tagged_rejection_keeps_server_text():
    response = parse_response(b"A0001 NO [AUTHENTICATIONFAILED] Invalid credentials (Failure)")
    assert response.status == "NO"
    assert response.code == "AUTHENTICATIONFAILED"
    assert response.text == "Invalid credentials (Failure)"


def test_continuation_request():
    assert parse_response(b"+ Ready for literal data") == ContinuationRequest(text="Ready for literal data")


def test_untagged_message_data():
    assert parse_response(b"* 17 EXISTS") == UntaggedResponse(kind="EXISTS", number=17)
    assert parse_response(b"* 4 EXPUNGE").number == 4


def test_untagged_numeric_response_codes():
    response = parse_response(b"* OK [UIDVALIDITY 3857529045] UIDs valid")
    assert response.kind == "OK"
    assert response.code == "UIDVALIDITY"
    assert response.code_data == 3857529045


def test_permanentflags_code_is_a_flag_set():
    response = parse_response(b"* OK [PERMANENTFLAGS (\\Deleted \\Seen \\*)] Limited")
    assert response.code_data == frozenset({"\\Deleted", "\\Seen", "\\*"})


def test_capability_response_is_upper_cased():
    response = parse_response(b"* CAPABILITY IMAP4rev1 STARTTLS auth=PLAIN")
    assert response.data == frozenset({"IMAP4REV1", "STARTTLS", "AUTH=PLAIN"})


def test_status_response():
    response = parse_response(b'* STATUS "INBOX" (MESSAGES 231 UIDNEXT 44292 UNSEEN 3)')
    assert response.kind == "STATUS"
    assert response.data == ("INBOX", {"MESSAGES": 231, "UIDNEXT": 44292, "UNSEEN": 3})


def test_list_response_decodes_modified_utf7():
    response = parse_response(b'* LIST (\\HasNoChildren) "/" "Entw&APw-rfe"')
    flags, delimiter, name = response.data
    assert flags == frozenset({"\\HasNoChildren"})
    assert delimiter == "/"
    assert name == "Entwürfe"


def test_search_response():
    assert parse_response(b"* SEARCH 2 84 882").data == (2, 84, 882)


def test_free_text_parentheses_do_not_break_parsing():
    response = parse_response(b"* OK Still here :) (really")
    assert response.text == "Still here :) (really"


def test_invalid_tagged_status_is_protocol_error():
    with pytest.raises(ProtocolError):
        parse_response(b"A0001 MAYBE done")


@pytest.mark.parametrize(
    "payload",
    [
        b"((a b) c",
        b"(a b))",
        b"(\"unterminated)",
        b"(BODY[1 x)",
    ],
)
def test_unbalanced_input_raises_protocol_error(payload):
    with pytest.raises(ProtocolError):
        parse_list(payload)


def test_quoted_strings_keep_parentheses_atomic():
    assert parse_list(b'("a (b" NIL 12 atom)') == [b"a (b", None, 12, "atom"]


def test_literals_are_substituted_for_markers():
    raw = RawResponse((b"(x {5}", b" y)"), (b"(((((",))
    assert parse_values(raw) == [["x", b"(((((", "y"]]


def test_envelope_fields_and_addresses():
    envelope = parse_envelope(parse_list(ENVELOPE))
    assert envelope.subject == "IMAP4rev1 WG mtg summary and minutes"
    assert envelope.date == "Wed, 17 Jul 1996 02:23:25 -0700 (PDT)"
    assert envelope.sent_at is not None and envelope.sent_at.year == 1996
    assert [str(a) for a in envelope.from_] == ["Terry Gray <gray@cac.washington.edu>"]
    assert [a.email for a in envelope.cc] == ["minutes@CNRI.Reston.VA.US", "KLENSIN@MIT.EDU"]
    assert envelope.bcc == ()
    assert envelope.in_reply_to is None
    assert envelope.message_id == "<B27397-0100000@cac.washington.edu>"


def test_address_groups_tag_their_members():
    envelope = parse_envelope(
        parse_list(
            b'(NIL "=?UTF-8?Q?Gr=C3=BC=C3=9Fe?=" NIL NIL NIL '
            b'((NIL NIL "team" NIL)(NIL NIL "a" "example.org")(NIL NIL "b" "example.org")(NIL NIL NIL NIL)'
            b'(NIL NIL "solo" "example.org")) NIL NIL NIL NIL)'
        )
    )
    assert envelope.subject == "Grüße"
    assert [(a.email, a.group) for a in envelope.to] == [
        ("a@example.org", "team"),
        ("b@example.org", "team"),
        ("solo@example.org", None),
    ]


def test_envelope_with_wrong_arity_is_rejected():
    with pytest.raises(ProtocolError):
        parse_envelope(parse_list(b"(NIL NIL NIL)"))


def test_nested_multipart_leaves_match_input():
    tree = parse_body_structure(parse_list(NESTED_MULTIPART))
    assert isinstance(tree, Multipart)
    leaves = list(tree.leaves())
    assert [(leaf.type, leaf.subtype) for leaf in leaves] == [
        ("TEXT", "PLAIN"),
        ("TEXT", "HTML"),
        ("IMAGE", "PNG"),
    ]
    assert tree.subtype == "MIXED"
    assert tree.params["BOUNDARY"] == "mix"


def test_multipart_part_paths_and_lookup():
    tree = parse_body_structure(parse_list(NESTED_MULTIPART))
    paths = [(path, node.mime_type) for path, node in tree.walk()]
    assert paths == [
        ("", "multipart/mixed"),
        ("1", "multipart/alternative"),
        ("1.1", "text/plain"),
        ("1.2", "text/html"),
        ("2", "image/png"),
    ]
    html = tree.find("1.2")
    assert isinstance(html, BodyPart)
    assert html.lines == 10
    assert html.encoding_code == 4
    image = tree.find("2")
    assert image.disposition == ("ATTACHMENT", {"FILENAME": "logo.png"})
    assert image.id == "<logo@example.org>"
    assert tree.find("3") is None


def test_single_part_message():
    part = parse_body_structure(parse_list(b'("TEXT" "PLAIN" ("CHARSET" "US-ASCII") NIL NIL "7BIT" 3028 92)'))
    assert isinstance(part, BodyPart)
    assert part.size == 3028
    assert part.lines == 92
    assert part.type_code == 0
    assert list(part.walk()) == [("1", part)]


def test_encapsulated_message_exposes_inner_tree():
    inner = b'("TEXT" "PLAIN" ("CHARSET" "US-ASCII") NIL NIL "7BIT" 10 1)'
    payload = (
        b'(("TEXT" "PLAIN" NIL NIL NIL "7BIT" 5 1)'
        b'("MESSAGE" "RFC822" NIL NIL NIL "7BIT" 400 ' + ENVELOPE + b" " + inner + b" 12)"
        b' "MIXED")'
    )
    tree = parse_body_structure(parse_list(payload))
    attached = tree.find("2")
    assert attached.mime_type == "message/rfc822"
    assert attached.envelope.subject == "IMAP4rev1 WG mtg summary and minutes"
    assert attached.lines == 12
    assert tree.find("2.1").mime_type == "text/plain"


def test_fetch_response_with_body_literal():
    raw = RawResponse((b"* 3 FETCH (UID 44 BODY[1] {21}", b" FLAGS (\\Seen))"), (b"Testing One Two Three",))
    response = parse_response(raw)
    assert response.kind == "FETCH"
    message = response.data
    assert message.seq == 3
    assert message.uid == 44
    assert message.seen
    assert message.sections["BODY[1]"] == b"Testing One Two Three"


def test_fetch_response_with_bodystructure():
    response = parse_response(b"* 12 FETCH (BODYSTRUCTURE " + NESTED_MULTIPART + b")")
    assert len(list(response.data.body_structure.leaves())) == 3


def test_merge_fetch_combines_records_for_one_message():
    flags = parse_response(b"* 3 FETCH (FLAGS (\\Seen))").data
    data = parse_response(RawResponse((b"* 3 FETCH (UID 44 BODY[1] {2}", b" RFC822.SIZE 10)"), (b"hi",))).data
    merged = merge_fetch(flags, data)
    assert merged.uid == 44
    assert merged.seen
    assert merged.size == 10
    assert merged.sections["BODY[1]"] == b"hi"
    assert merge_fetch(merged, parse_response(b"* 3 FETCH (FLAGS ())").data).flags == frozenset({"\\Seen"})
    with pytest.raises(ValueError):
        merge_fetch(flags, parse_response(b"* 4 FETCH (FLAGS ())").data)
