import json

import pytest

from catalog import CatalogWriter, LightIndexEntry, PersistError, compute_discount, light_entry


@pytest.fixture
def writer(tmp_path):
    w = CatalogWriter(tmp_path / "data")
    w.ensure_dirs()
    return w


class TestDiscount:
    def test_exact_percentage(self):
        assert compute_discount(1000, 800) == 20.0

    def test_numeric_strings(self):
        assert compute_discount("200", "150") == 25.0

    @pytest.mark.parametrize("price,promo", [
        (1000, None),
        (None, 800),
        (800, 1000),
        (1000, 1000),
        (1000, 0),
        (0, 0),
        ("n/a", 5),
        (True, 0.5),
    ])
    def test_no_discount(self, price, promo):
        assert compute_discount(price, promo) is None

    def test_source_discount_is_ignored(self):
        entry = light_entry("x", {"price": 1000, "discount": 35})
        assert entry.discount is None
        entry = light_entry("x", {"price": 1000, "prixEnPromo": 1200, "discount": 35})
        assert entry.discount is None
        entry = light_entry("x", {"price": 1000, "prixEnPromo": 800, "discount": 35})
        assert entry.discount == 20.0


class TestLightEntry:
    def test_full_record(self):
        record = {
            "_id": "64f0",
            "title": "PC Gamer X",
            "price": 1000,
            "prixEnPromo": 800,
            "images": [{"thumbnailImageSrc": "https://img/1.jpg"}, {"thumbnailImageSrc": "https://img/2.jpg"}],
            "categorie": {"titre": "PC"},
            "filscateg": {"titre": "Gaming"},
        }
        dumped = light_entry("pc-gamer-x", record).model_dump(by_alias=True)
        assert dumped == {
            "slug": "pc-gamer-x",
            "id": "64f0",
            "title": "PC Gamer X",
            "price": 1000,
            "prixEnPromo": 800,
            "discount": 20.0,
            "img": "https://img/1.jpg",
            "category": "PC",
            "subcategory": "Gaming",
        }

    def test_fallbacks(self):
        entry = light_entry("souris", {"title_fr": "Souris", "gallerie": {"urlPhoto": ["https://img/g.jpg"]}})
        assert entry.title == "Souris"
        assert entry.img == "https://img/g.jpg"
        assert entry.category == "Other"
        assert entry.subcategory is None
        assert entry.id is None

    def test_bare_record_uses_slug_as_title(self):
        entry = light_entry("clavier", {})
        assert entry.title == "clavier"
        assert entry.img is None


class TestCatalogWriter:
    def test_write_and_read_product(self, writer):
        path = writer.write_product("écran", {"title": "Écran 27\""})
        assert path == writer.products_dir / "écran.json"
        text = path.read_text(encoding="utf-8")
        assert "Écran" in text
        assert text.startswith("{\n  ")
        assert writer.read_product("écran") == {"title": "Écran 27\""}

    def test_rejects_slug_with_separator(self, writer):
        with pytest.raises(PersistError):
            writer.write_product("a/b", {"title": "x"})

    def test_write_failure_is_persist_error(self, tmp_path):
        w = CatalogWriter(tmp_path / "missing")
        with pytest.raises(PersistError):
            w.write_product("a", {"title": "x"})

    def test_light_index_skips_missing_and_corrupt(self, writer):
        writer.write_product("good", {"title": "Good", "price": 10})
        (writer.products_dir / "corrupt.json").write_text("{not json", encoding="utf-8")
        (writer.products_dir / "list.json").write_text("[1, 2]", encoding="utf-8")

        entries = writer.build_light_index(["good", "corrupt", "missing", "list"])
        assert [e.slug for e in entries] == ["good"]

    def test_non_string_fields_pass_through(self, writer):
        writer.write_product("rtx", {
            "title": 4070,
            "price": 10,
            "images": [{"thumbnailImageSrc": {"url": "https://img/1.jpg"}}],
            "categorie": {"titre": 12},
            "filscateg": {"titre": ["GPU"]},
        })
        writer.write_product("nested", {"title": {"fr": "x"}})

        entries = writer.build_light_index(["rtx", "nested"])
        assert [e.slug for e in entries] == ["rtx", "nested"]
        dumped = entries[0].model_dump(by_alias=True)
        assert dumped["title"] == 4070
        assert dumped["img"] == {"url": "https://img/1.jpg"}
        assert dumped["category"] == 12
        assert dumped["subcategory"] == ["GPU"]
        assert entries[1].title == {"fr": "x"}

    def test_indexes_written_as_pretty_json(self, writer):
        writer.write_product("a", {"title": "A", "price": 1000, "prixEnPromo": 800})
        writer.write_slug_index(["a", "b"])
        writer.write_light_index(writer.build_light_index(["a", "b"]))

        assert json.loads(writer.slug_index_path.read_text(encoding="utf-8")) == ["a", "b"]
        light = json.loads(writer.light_index_path.read_text(encoding="utf-8"))
        assert light == [{
            "slug": "a",
            "id": None,
            "title": "A",
            "price": 1000,
            "prixEnPromo": 800,
            "discount": 20.0,
            "img": None,
            "category": "Other",
            "subcategory": None,
        }]

    def test_rebuild_is_byte_identical(self, writer):
        writer.write_product("a", {"title": "A", "price": 50, "prixEnPromo": 40})
        writer.write_product("b", {"title": "B"})
        writer.write_light_index(writer.build_light_index(["a", "b"]))
        first = writer.light_index_path.read_bytes()

        writer.write_product("a", {"title": "A", "price": 50, "prixEnPromo": 40})
        writer.write_light_index(writer.build_light_index(["a", "b"]))
        assert writer.light_index_path.read_bytes() == first

    def test_entry_model_accepts_alias(self):
        entry = LightIndexEntry(slug="s", title="t", prixEnPromo=5)
        assert entry.prix_en_promo == 5
