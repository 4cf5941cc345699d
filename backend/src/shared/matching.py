"""
Creator matching for requests.
Ranks available, verified creators by skill overlap with a request's
required skills, then by reputation. Read-only.
"""
from decimal import Decimal
from typing import Any, Dict, Iterable, List

from boto3.dynamodb.conditions import Attr

from .dynamo import scan_all
from .errors import NotFound
from .utils import normalize_text


class CreatorDirectory:

    def __init__(self, table):
        self.table = table

    def get(self, creator_id: str) -> Dict[str, Any]:
        response = self.table.get_item(Key={'creatorId': creator_id})
        return response.get('Item')

    def require(self, creator_id: str) -> Dict[str, Any]:
        creator = self.get(creator_id)
        if not creator:
            raise NotFound('Creator', creator_id)
        return creator

    def list_eligible(self) -> List[Dict[str, Any]]:
        """Creators that are both available and verified."""
        return scan_all(
            self.table,
            FilterExpression=Attr('isAvailable').eq(True) & Attr('isVerified').eq(True)
        )


def required_skills(request: Dict[str, Any]) -> List[str]:
    requirements = request.get('requirements') or {}
    return list(requirements.get('skills') or [])


def skill_overlap(required: Iterable[str], skills: Iterable[str]) -> List[str]:
    """Required skills the creator has, compared case-insensitively."""
    have = {normalize_text(s) for s in skills or []}
    matched = []
    for skill in required:
        key = normalize_text(skill)
        if key and key in have and key not in matched:
            matched.append(key)
    return matched


def rank_creators(required: Iterable[str], creators: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Rank creators for a set of required skills.

    Only available, verified creators with a nonzero overlap are kept.
    Ordering: overlap count descending, then reputation (rating) descending.

    Returns:
        Creator summaries with matchScore and matchedSkills
    """
    required = list(required)
    ranked = []
    for creator in creators:
        if not creator.get('isAvailable') or not creator.get('isVerified'):
            continue
        matched = skill_overlap(required, creator.get('skills'))
        if not matched:
            continue
        ranked.append({
            'id': creator['creatorId'],
            'name': creator.get('name'),
            'skills': sorted(creator.get('skills') or []),
            'rating': creator.get('rating', Decimal('0')),
            'completedProjects': creator.get('completedProjects', 0),
            'matchScore': len(matched),
            'matchedSkills': matched,
        })

    ranked.sort(key=lambda c: (-c['matchScore'], -Decimal(str(c['rating']))))
    return ranked


def find_matches(request: Dict[str, Any], directory: CreatorDirectory) -> List[Dict[str, Any]]:
    """Ranked creators for a stored request."""
    skills = required_skills(request)
    if not skills:
        return []
    return rank_creators(skills, directory.list_eligible())
