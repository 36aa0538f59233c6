"""Trigger categories used to decide whether a message deserves deeper analysis.

Categories are evaluated in order and the first match wins. ``targeted``
categories only fire when the message is aimed at someone (a reply or a
mention); the others fall back to the author as the subject. Patterns cover
English, Traditional Chinese and Japanese phrasing collected from workplace
harassment reports and labour dispute cases.

Bump ``TRIGGER_TABLE_VERSION`` whenever categories or patterns change.
"""

from typing import Any, Dict, List

TRIGGER_TABLE_VERSION = 1

TRIGGER_CATEGORIES: List[Dict[str, Any]] = [
    # Blunt insults, only meaningful when aimed at someone
    {
        "category": "obvious_negative",
        "reason": "Obvious negative keyword detected",
        "targeted": True,
        "pattern_type": "keyword",
        "patterns": [
            "stupid", "idiot", "incompetent", "useless", "pathetic", "terrible",
            "worst", "hate", "disgusting", "annoying", "lazy", "dumb", "fool",
            "バカ", "アホ", "無能", "使えない", "最悪", "ダメ", "クソ",
            "笨", "蠢", "廢物", "白痴", "垃圾", "爛",
        ],
    },
    # Work issues recast as personality traits
    {
        "category": "labeling",
        "reason": "Labeling pattern detected (turning behavior into personality trait)",
        "targeted": False,
        "pattern_type": "regex",
        "patterns": [
            r"壞習慣",
            r"態度(有)?問題",
            r"(他|她|你)(就是|一直都是)這樣",
            r"老是(這樣|如此)",
            r"每次都",
            r"bad habit",
            r"attitude problem",
            r"(he|she|they|you)'s? always like (this|that)",
            r"every single time",
            r"悪い癖",
            r"態度が悪い",
        ],
    },
    {
        "category": "escalation",
        "reason": "Escalation language detected",
        "targeted": False,
        "pattern_type": "regex",
        "patterns": [
            r"更?強硬",
            r"嚴正(聲明|警告)",
            r"下次再(這樣|如此)",
            r"不(能|可以)再",
            r"最後(一次)?警告",
            r"more (firm|strict|harsh)",
            r"formal warning",
            r"last (chance|warning)",
            r"next time.*(will|gonna)",
            r"厳しく",
            r"最後の警告",
        ],
    },
    # Statements about a whole group
    {
        "category": "generalizing",
        "reason": "Generalizing/implicit bias pattern detected",
        "targeted": False,
        "pattern_type": "regex",
        "patterns": [
            r"你們.{0,4}(就是|都是|總是)這樣",
            r".{1,4}果然",
            r"難怪(你|他|她)是",
            r"老(人|害|古板)",
            r"年輕人(就是|都是)",
            r"女(人|生)(就是|都是|不行)",
            r"男(人|生)(就是|都是)",
            r"you (people|guys|all) (are|always)",
            r"typical (of )?(you|them)",
            r"no wonder (you|they)",
            r"(women|men|girls|guys) (are|always|never|can't)",
            r"old (people|folks|timer)",
            r"young (people|kids) (are|always)",
            r"(外國人|外籍)(就是|都是)",
        ],
    },
    {
        "category": "judgmental",
        "reason": "Judgmental/leading question detected",
        "targeted": True,
        "pattern_type": "regex",
        "patterns": [
            r"你(想|打算)怎麼帶.*team",
            r"(他|她|他們)知道.*嗎\s*[？?]",
            r"你(有沒有|是不是)(想過|考慮過)",
            r"how do you (plan|intend) to",
            r"do(es)? (he|she|they) (even )?(know|understand)",
            r"have you (even )?(thought|considered)",
        ],
    },
    {
        "category": "insult",
        "reason": "Direct personal insult detected (人身攻擊)",
        "targeted": False,
        "pattern_type": "regex",
        "patterns": [
            r"笨蛋", r"白癡", r"廢物", r"累贅", r"低能", r"智障",
            r"腦(袋|子)有問題", r"聽不懂人話", r"人話都聽不懂",
            r"沒用", r"沒腦袋", r"腦袋裝什麼",
            r"你是不是有病", r"有毛病",
            r"idiot", r"moron", r"useless", r"brain ?dead",
            r"what('s| is) wrong with you",
            r"馬鹿", r"アホ", r"役立たず", r"使えない奴",
        ],
    },
    {
        "category": "competence_denial",
        "reason": "Competence denial detected (能力否定)",
        "targeted": True,
        "pattern_type": "regex",
        "patterns": [
            r"你(到底|根本)?(怎麼|哪裡)(會|能)",
            r"連這(都|也)(不會|做不到|搞不懂)",
            r"這(種|麼)(簡單|基本)(的事|的東西)?都(不會|做不好)",
            r"你(的)?能力(不行|不夠|不足|有問題)",
            r"這是基本(常識|的東西)",
            r"你(到底|究竟)怎麼(想的|做事)",
            r"你(是不是|到底)(學不會|聽不懂)",
            r"現在解釋有什麼用",
            r"誰讓你不(事先|先)(確認|檢查)",
            r"how (did|could) you (even )?get this job",
            r"can't (even )?do (simple|basic)",
            r"what were you thinking",
            r"this is basic",
            r"こんな(簡単|基本的)なこと(も|さえ)",
        ],
    },
    {
        "category": "threat",
        "reason": "Threat/intimidation detected (威脅恐嚇)",
        "targeted": False,
        "pattern_type": "regex",
        "patterns": [
            r"準備(走人|離職|滾蛋|收東西)",
            r"別想(升職|加薪|升遷)",
            r"再(這樣|出錯|犯錯).{0,6}(就|我就|你就)",
            r"向(主管|老闆|HR|人資)報告",
            r"你(最好|給我)(不要|別)再",
            r"這(件事|次)搞砸.{0,4}你就",
            r"看你(還能|能)待多久",
            r"走著瞧",
            r"你(完蛋|死定)了",
            r"you('re| are) (fired|done|finished)",
            r"start (looking|packing)",
            r"forget about (promotion|raise)",
            r"i('ll| will) report (this|you)",
            r"you('d| had) better (not|watch)",
            r"クビ(にする|だ)", r"辞めろ", r"覚えておけ",
        ],
    },
    {
        "category": "gender_bias",
        "reason": "Gender discrimination detected (性別歧視)",
        "targeted": False,
        "pattern_type": "regex",
        "patterns": [
            r"女(生|人|性)(就是|不適合|做不來|不懂)",
            r"男(生|人|性)才(能|會|適合|懂)",
            r"懷孕(還|就)(來|敢|要)",
            r"什麼時候(結婚|生小孩|生孩子)",
            r"(結婚|生小孩|生孩子)(了嗎|沒)",
            r"女子無才便是德",
            r"女生(就是)?愛(耍|玩)心機",
            r"女生就是(麻煩|囉嗦|情緒化)",
            r"男生(比較|就是比)(適合|懂|厲害)",
            r"這是(男生|女生)的(工作|事)",
            r"women (are|can't|don't|shouldn't)",
            r"men are (better|more|just)",
            r"she('s| is) (too )?emotional",
            r"typical (woman|girl|female)",
            r"man up",
            r"boys will be boys",
            r"女(だから|のくせに)", r"男(なら|だから)",
        ],
    },
    {
        "category": "age_bias",
        "reason": "Age discrimination detected (年齡歧視)",
        "targeted": False,
        "pattern_type": "regex",
        "patterns": [
            r"年紀大(了)?就", r"老(了|人家)(就|跟不上|學不會)",
            r"老(人|員工)(就是|都是|不行)",
            r"(該|應該)(退休|讓位|讓年輕人)了",
            r"老古板", r"老頑固", r"倚老賣老",
            r"年輕人(就是|太|都是)(不懂事|嫩|草莓)",
            r"小孩子(懂|知道)什麼",
            r"草莓族", r"玻璃心",
            r"吃不了苦", r"抗壓(性|力)(差|不夠|低)",
            r"現在(的)?年輕人",
            r"too old (to|for)",
            r"old (timer|dog|school)",
            r"(kids|millennials|gen ?z) (these days|are|don't)",
            r"back in my day",
            r"young(er)? (people|generation) (are|don't|can't)",
            r"年寄り(は|だから)", r"若い(奴|者)(は|なんて)",
        ],
    },
    {
        "category": "condescending",
        "reason": "Condescending/patronizing language detected (說教貶低)",
        "targeted": True,
        "pattern_type": "regex",
        "patterns": [
            r"你(應該|要)(多)?(檢討|反省)(自己)?",
            r"聽我的(準沒錯|就對了|沒錯)",
            r"我是為(你|妳)好",
            r"(吃苦|辛苦)(是|當)(應該的|吃補|福氣)",
            r"年輕(人|的時候)就(是|該|要)(多)?吃(點)?苦",
            r"別(想|說)那麼多",
            r"你(這樣|那樣)(怎麼|哪能)(行|可以)",
            r"我(都是|這樣)(過來的|熬過來的)",
            r"不要(老是|一直|總是)抱怨",
            r"you should (really )?reflect",
            r"i('m| am) (just )?trying to help",
            r"trust me (on this|i know)",
            r"when i was your age",
            r"stop complaining",
            r"that's (just )?how it (is|works)",
            r"俺(の言う通り|が正しい)", r"文句(を|ばかり)言う",
        ],
    },
    {
        "category": "dismissive",
        "reason": "Dismissive/minimizing language detected (冷漠忽視)",
        "targeted": True,
        "pattern_type": "regex",
        "patterns": [
            r"別(大驚小怪|小題大作)",
            r"沒什麼大不了",
            r"這(有什麼|算什麼)(好|值得)",
            r"想太多了?",
            r"日子(還不是|不還是)(得|要)過",
            r"抗壓性(太差|不夠)",
            r"這(點|麼點)(小事|事情)",
            r"玻璃心",
            r"don't (be so )?dramatic",
            r"you('re| are) over ?react",
            r"it's not (a )?big deal",
            r"just (deal|live) with it",
            r"stop being (so )?(sensitive|dramatic)",
            r"大げさ", r"気にしすぎ",
        ],
    },
    {
        "category": "public_humiliation",
        "reason": "Public humiliation pattern detected (公開羞辱)",
        "targeted": True,
        "pattern_type": "regex",
        "patterns": [
            r"(大家|各位|你們)(看看|評評理)",
            r"讓(大家|他們)(看看|知道)",
            r"這(種|樣的)(人|員工|表現)",
            r"(我|咱們|我們)來(看看|說說)",
            r"everyone(,)? (look|see)",
            r"let me (show|tell) everyone",
            r"this is (what|how) (you|they)",
        ],
    },
    # Three or more exclamation marks, or shouting in capitals
    {
        "category": "aggressive_tone",
        "reason": "Aggressive tone detected",
        "targeted": True,
        "pattern_type": "tone",
        "patterns": [],
    },
]
