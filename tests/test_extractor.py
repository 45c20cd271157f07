"""extractor モジュールのユニットテスト."""

from pathlib import Path
from unittest.mock import patch

from bs4 import BeautifulSoup

from reviewscan.extractor import (
    ReviewDraft,
    clean_text,
    extract_drafts,
    extract_fields,
    extract_product_images,
    extract_product_title,
    extract_product_videos,
    extract_reviews,
    find_review_blocks,
    truncate_content,
)

FIXTURES_DIR = Path(__file__).parent / "fixtures"

ASIN = "B0TEST1234"


def _load_fixture(name: str) -> str:
    return (FIXTURES_DIR / name).read_text(encoding="utf-8")


def _review_block(i: int, *, author: str = "Reviewer", content: str | None = None) -> str:
    body = content if content is not None else f"Review number {i} with enough text to pass the gate."
    return (
        f'<div data-hook="review" id="R{i:09d}X">'
        f'<span class="a-profile-name">{author} {i}</span>'
        f'<a data-hook="review-title"><span>Title {i}</span></a>'
        f'<i data-hook="review-star-rating"><span class="a-icon-alt">4.0 out of 5 stars</span></i>'
        f'<span data-hook="review-body"><span>{body}</span></span>'
        f"</div>"
    )


class TestCleanText:
    """clean_text のテスト."""

    def test_strips_tags_and_entities(self):
        assert clean_text("<b>Great</b>&nbsp;blender &amp; jar") == "Great blender jar"

    def test_collapses_whitespace(self):
        assert clean_text("  line one\n\n   line two  ") == "line one line two"

    def test_line_breaks_become_spaces(self):
        assert clean_text("first.<br>second.<br/>third.") == "first. second. third."


class TestTruncateContent:
    """truncate_content のテスト."""

    def test_short_content_unchanged(self):
        assert truncate_content("short text") == "short text"

    def test_long_content_truncated_with_marker(self):
        text = "x" * 250
        result = truncate_content(text)
        assert result == "x" * 200 + "..."


class TestDataHookMarkup:
    """data-hook 属性ベースのマークアップからの抽出."""

    def test_extracts_all_reviews(self):
        reviews = extract_reviews(_load_fixture("reviews_data_hook.html"), ASIN)

        assert len(reviews) == 5
        assert [r.author for r in reviews] == [
            "Jane Doe", "John Smith", "Casey Lee", "Pat Morgan", "Sam Rivera",
        ]
        assert [r.rating for r in reviews] == [5.0, 5.0, 4.0, 1.0, 5.0]
        assert [r.verified for r in reviews] == [True, True, True, False, False]

    def test_first_review_fields(self):
        review = extract_reviews(_load_fixture("reviews_data_hook.html"), ASIN)[0]

        assert review.id == "review_0"
        assert review.title == "Works exactly as described"
        assert review.date == "May 1, 2024"
        assert review.helpful_votes == 12
        assert review.link == "https://www.amazon.com/gp/customer-reviews/R1JANEDOE01"
        assert review.content.startswith("I have used this blender every morning for three months. It crushes")
        assert "&amp;" not in review.content
        assert "<" not in review.content

    def test_title_excludes_star_rating_text(self):
        reviews = extract_reviews(_load_fixture("reviews_data_hook.html"), ASIN)
        assert all("out of 5 stars" not in r.title for r in reviews)

    def test_one_person_found_helpful(self):
        review = extract_reviews(_load_fixture("reviews_data_hook.html"), ASIN)[2]
        assert review.helpful_votes == 1

    def test_comma_without_count_before_helpful_text(self):
        html = _review_block(1, content="Honestly, people found this helpful and so did I.")
        reviews = extract_reviews(html, ASIN)

        assert len(reviews) == 1
        assert reviews[0].helpful_votes == 0

    def test_block_parse_error_skips_only_that_block(self):
        html = _review_block(1) + _review_block(2)

        def flaky(block):
            if block.get("id") == "R000000001X":
                raise ValueError("invalid literal for int()")
            return extract_fields(block)

        with patch("reviewscan.extractor.extract_fields", side_effect=flaky):
            drafts = extract_drafts(html)

        assert [d.author for d in drafts] == ["Reviewer 2"]

    def test_long_content_is_truncated(self):
        review = extract_reviews(_load_fixture("reviews_data_hook.html"), ASIN)[3]
        assert review.content.endswith("...")
        assert len(review.content) == 203

    def test_patterns_and_scores_attached(self):
        reviews = extract_reviews(_load_fixture("reviews_data_hook.html"), ASIN)

        assert reviews[0].suspicious_patterns == ()
        assert reviews[1].suspicious_patterns == ("contains common marketing phrases",)
        assert reviews[4].suspicious_patterns == (
            "contains common marketing phrases",
            "very brief review with high rating",
            "high rating without verified purchase",
        )
        assert reviews[4].authenticity_score == 37
        assert reviews[3].authenticity_score == 80
        assert all(0 <= r.authenticity_score <= 100 for r in reviews)

    def test_ids_unique_in_batch(self):
        reviews = extract_reviews(_load_fixture("reviews_data_hook.html"), ASIN)
        assert len({r.id for r in reviews}) == len(reviews)


class TestFallbackStrategies:
    """クラス名・article タグへのフォールバック."""

    def test_class_name_fallback(self):
        drafts = extract_drafts(_load_fixture("reviews_class_name.html"))

        # 著者なし・本文が短すぎるブロックは除外される
        assert len(drafts) == 1
        draft = drafts[0]
        assert draft.author == "Alex Kim"
        assert draft.rating == 4.0
        assert draft.title == "Solid value for the price"
        assert draft.date == "March 3, 2024"
        assert draft.verified is True
        assert draft.helpful_votes == 3

    def test_class_name_fallback_synthesizes_link(self):
        reviews = extract_reviews(_load_fixture("reviews_class_name.html"), ASIN)
        assert reviews[0].link == f"https://www.amazon.com/gp/customer-reviews/R0{ASIN}"

    def test_article_fallback(self):
        drafts = extract_drafts(_load_fixture("reviews_article.html"))

        assert len(drafts) == 1
        assert drafts[0].author == "Morgan Blake"
        assert drafts[0].rating == 3.0
        assert drafts[0].title == "Does the job"
        assert drafts[0].date == "June 5, 2024"
        assert drafts[0].verified is False

    def test_star_class_rating(self):
        html = (
            '<div data-hook="review"><span class="a-profile-name">Lee</span>'
            '<i class="a-icon a-icon-star a-star-4-5"></i>'
            '<span class="review-title">Nice</span>'
            '<span data-hook="review-body">Holds up well after daily use.</span></div>'
        )
        block = BeautifulSoup(html, "html.parser").div
        assert extract_fields(block).rating == 4.5

    def test_empty_html(self):
        assert extract_reviews("<html><body></body></html>", ASIN) == []


class TestValidityGate:
    """必須フィールドと本文長のチェック."""

    def _draft(self, **overrides) -> ReviewDraft:
        fields = dict(
            author="A", rating=4.0, title="T", content="long enough content",
            date=None, verified=False, helpful_votes=0,
        )
        fields.update(overrides)
        return ReviewDraft(**fields)

    def test_valid(self):
        assert self._draft().is_valid()

    def test_missing_fields(self):
        for name in ("author", "rating", "title", "content"):
            assert not self._draft(**{name: None}).is_valid(), name

    def test_content_length_boundary(self):
        assert not self._draft(content="x" * 10).is_valid()
        assert self._draft(content="x" * 11).is_valid()

    def test_placeholder_content_rejected(self):
        draft = self._draft(content="This is a detailed review of the product and its features.")
        assert not draft.is_valid()

    def test_short_content_block_dropped(self):
        html = "".join(_review_block(i, content="too short") for i in range(3))
        assert extract_reviews(html, ASIN) == []


class TestBounds:
    """候補ブロック数・返却件数の上限."""

    def test_batch_capped_at_ten(self):
        html = "".join(_review_block(i) for i in range(50))
        reviews = extract_reviews(html, ASIN)
        assert len(reviews) == 10

    def test_candidate_blocks_capped_at_twenty(self):
        soup = BeautifulSoup("".join(_review_block(i) for i in range(50)), "html.parser")
        assert len(find_review_blocks(soup)) == 20

    def test_valid_blocks_beyond_candidate_limit_ignored(self):
        invalid = "".join(_review_block(i, content="") for i in range(20))
        valid = "".join(_review_block(i) for i in range(20, 25))
        assert extract_reviews(invalid + valid, ASIN) == []


class TestProductInfo:
    """商品タイトル・画像・動画の抽出."""

    def test_product_title_from_product_link(self):
        assert extract_product_title(_load_fixture("reviews_data_hook.html")) == "Acme Pro Blender 1200W"

    def test_product_title_from_title_tag(self):
        html = "<html><head><title>Amazon.com: Customer reviews: Acme Kettle</title></head></html>"
        assert extract_product_title(html) == "Acme Kettle"

    def test_product_title_missing(self):
        assert extract_product_title("<html><body></body></html>") == ""

    def test_product_images(self):
        images = extract_product_images(_load_fixture("reviews_data_hook.html"))
        assert images == [
            "https://m.media-amazon.com/images/I/71abcDEFghL._AC_SY300_.jpg",
            "https://m.media-amazon.com/images/I/81xyzUVWqrL._AC_SY300_.jpg",
        ]

    def test_product_videos(self):
        videos = extract_product_videos(_load_fixture("reviews_data_hook.html"))
        assert videos == [{
            "url": "https://m.media-amazon.com/images/S/vse-vms/acme-demo.mp4",
            "title": "Acme Pro Blender demo",
        }]
