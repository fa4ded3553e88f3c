from __future__ import annotations

import random
from typing import Optional

from emotion_jar.internal_core.contracts import FallbackReason, TransformResult

FALLBACK_POOL: tuple[tuple[str, str], ...] = (
    (
        "这一刻确实不容易，我感觉到心里的那个结。我不需要立刻解开它，只需要轻轻地把手放在上面，告诉自己：我在呢，我陪着你。",
        "我们必须接受失望，因为它是有限的，但千万不可失去希望，因为它是无穷的。 —— 马丁·路德·金",
    ),
    (
        "我不必时刻坚强，也会有想哭的时候。眼泪不是软弱，它是情绪在帮我排毒。哭过之后，我会感觉轻盈一些，这就足够了。",
        "世界上只有一种真正的英雄主义，那就是在认清生活的真相后依然热爱生活。 —— 罗曼·罗兰",
    ),
    (
        "也许我现在做不到最好，但这不代表我不好。我正在按照自己的节奏在这个世界上行走，每一步都算数。",
        "人生的路，要靠自己一步一步去走，真正能保护你的，是你自己的人格选择和文化选择。 —— 杨绛",
    ),
    (
        "虽然现在周围有点黑，但我知道这只是暂时的。我不需要去寻找光，因为我自己就是那个拿着手电筒的人。",
        "生活不是等待风暴过去，而是学会在雨中跳舞。 —— 维维安·格林",
    ),
    (
        "我允许自己犯错，允许自己不完美。这些缝隙正好让真实的我也能透透气。我接纳完整的自己，包括那些有点灰暗的部分。",
        "爱自己是终身浪漫的开始。 —— 王尔德",
    ),
)


def pick_fallback(reason: FallbackReason, rng: Optional[random.Random] = None) -> TransformResult:
    text, quote = (rng or random).choice(FALLBACK_POOL)
    return TransformResult(transformed_text=text, quote=quote, source="fallback", reason=reason)


def is_fallback_pair(transformed_text: str, quote: Optional[str]) -> bool:
    return (transformed_text, quote) in FALLBACK_POOL
