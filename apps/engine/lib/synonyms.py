"""
Synonym groups used to recognise the same clinical concept under different names.

Each key is a concept label, values are surface forms. A name belongs to a
concept when one of the surface forms appears in it as a whole phrase.
Groups are scanned in declaration order and the longest matching surface
form wins, so "coil embolization" lands on coiling, not on embolization.
"""
from __future__ import annotations

import re
from functools import lru_cache

from packages.shared.models import EntityType

PROCEDURE_SYNONYMS: dict[str, list[str]] = {
    "aneurysm coiling": [
        "coiling", "coil embolization", "endovascular coiling", "aneurysm coiling",
        "coil", "coils", "embolization of aneurysm",
    ],
    "aneurysm clipping": [
        "clipping", "aneurysm clipping", "microsurgical clipping", "surgical clipping",
        "clip ligation",
    ],
    "craniotomy": [
        "craniotomy", "open craniotomy", "pterional craniotomy", "frontal craniotomy",
        "temporal craniotomy",
    ],
    "craniectomy": [
        "craniectomy", "decompressive craniectomy", "hemicraniectomy",
        "decompressive surgery",
    ],
    "EVD placement": [
        "evd", "evd placement", "external ventricular drain", "ventriculostomy",
        "ventricular drain", "evd insertion",
    ],
    "lumbar drain": [
        "lumbar drain", "ld placement", "lumbar drainage", "spinal drain",
    ],
    "VP shunt": [
        "vp shunt", "ventriculoperitoneal shunt", "shunt placement", "shunt insertion",
    ],
    "tumor resection": [
        "resection", "tumor resection", "gross total resection", "gtr",
        "subtotal resection", "str", "debulking",
    ],
    "biopsy": [
        "biopsy", "brain biopsy", "stereotactic biopsy", "needle biopsy",
    ],
    "cranioplasty": [
        "cranioplasty", "cranial reconstruction", "bone flap replacement", "skull repair",
    ],
    "angiography": [
        "angiography", "angiogram", "dsa", "cerebral angiography",
        "digital subtraction angiography",
    ],
    "embolization": [
        "embolization", "endovascular embolization",
    ],
}

MEDICATION_SYNONYMS: dict[str, list[str]] = {
    "aspirin": ["aspirin", "asa", "acetylsalicylic acid"],
    "clopidogrel": ["clopidogrel", "plavix"],
    "warfarin": ["warfarin", "coumadin", "warfarin sodium"],
    "apixaban": ["apixaban", "eliquis"],
    "rivaroxaban": ["rivaroxaban", "xarelto"],
    "levetiracetam": ["levetiracetam", "keppra"],
    "phenytoin": ["phenytoin", "dilantin", "fosphenytoin"],
    "dexamethasone": ["dexamethasone", "decadron"],
    "mannitol": ["mannitol", "osmotic therapy"],
    "nimodipine": ["nimodipine", "nimotop"],
    "labetalol": ["labetalol", "trandate"],
    "nicardipine": ["nicardipine", "cardene"],
    "metoprolol": ["metoprolol", "lopressor"],
    "atorvastatin": ["atorvastatin", "lipitor"],
    "pantoprazole": ["pantoprazole", "protonix"],
}

COMPLICATION_SYNONYMS: dict[str, list[str]] = {
    "vasospasm": [
        "vasospasm", "cerebral vasospasm", "arterial narrowing",
        "delayed cerebral ischemia", "dci",
    ],
    "hydrocephalus": [
        "hydrocephalus", "ventriculomegaly", "enlarged ventricles",
        "obstructive hydrocephalus", "communicating hydrocephalus",
    ],
    "seizure": ["seizure", "seizures", "convulsion", "epileptic activity", "ictal activity"],
    "infection": ["infection", "meningitis", "ventriculitis", "wound infection", "cns infection"],
    "hemorrhage": ["hemorrhage", "bleeding", "rebleed", "rebleeding", "hematoma expansion"],
    "stroke": ["stroke", "cva", "cerebrovascular accident", "infarct", "infarction", "ischemic stroke"],
    "edema": ["edema", "cerebral edema", "brain swelling"],
}

SYNONYMS_BY_TYPE: dict[EntityType, dict[str, list[str]]] = {
    EntityType.PROCEDURE: PROCEDURE_SYNONYMS,
    EntityType.MEDICATION: MEDICATION_SYNONYMS,
    EntityType.COMPLICATION: COMPLICATION_SYNONYMS,
}


@lru_cache(maxsize=None)
def _phrase_pattern(phrase: str) -> re.Pattern:
    return re.compile(rf"(?<![a-z0-9]){re.escape(phrase)}(?![a-z0-9])")


def find_concept(name: str, entity_type: EntityType | None = None) -> str | None:
    """
    Return the concept label a name belongs to, or None.
    With no entity type every table is searched (procedures, complications, medications).
    """
    if not name:
        return None
    lowered = " ".join(name.lower().split())
    tables = (
        [SYNONYMS_BY_TYPE[entity_type]]
        if entity_type is not None
        else [PROCEDURE_SYNONYMS, COMPLICATION_SYNONYMS, MEDICATION_SYNONYMS]
    )

    best_concept: str | None = None
    best_len = 0
    for table in tables:
        for concept, forms in table.items():
            for form in forms:
                if len(form) > best_len and _phrase_pattern(form).search(lowered):
                    best_concept = concept
                    best_len = len(form)
    return best_concept


# Words that turn a procedure name into a different act on the same device or site
# ("EVD removal" is not "EVD placement").
ACTION_QUALIFIERS = frozenset({
    "removal", "removed", "revision", "revised", "replacement", "replaced",
    "exchange", "exchanged", "reinsertion", "reinserted", "repositioning",
    "repositioned", "externalization", "externalized", "takedown",
})


@lru_cache(maxsize=None)
def _form_words(concept: str) -> frozenset[str]:
    words: set[str] = set()
    for table in SYNONYMS_BY_TYPE.values():
        for form in table.get(concept, []):
            words.update(form.split())
    return frozenset(words)


def action_qualifiers(name: str, concept: str | None = None) -> frozenset[str]:
    """
    Action qualifier words in a name. Words that are part of the concept's own
    surface forms ("bone flap replacement" is a cranioplasty) are not counted.
    """
    words = set(re.split(r"[^a-z0-9]+", (name or "").lower()))
    found = words & ACTION_QUALIFIERS
    if concept is not None:
        found -= _form_words(concept)
    return frozenset(found)
