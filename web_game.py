#!/usr/bin/env python3
"""
Guess The Player — browser version.

Each browser gets its own GameController, keyed by a short hash kept in the
Flask session cookie. Only the most recently active browsers keep a game
in memory ("max_controllers"). Charts are rendered on demand into the output
directory, one file per browser and chart.

Usage:
  python web_game.py
  Then open http://localhost:5050 in your browser.
"""

import argparse
import hashlib
import os
import threading
from urllib.parse import urlparse

from dotenv import load_dotenv
from flask import Flask, render_template_string, jsonify, request, send_file, session
from loguru import logger

from game import (
    CLUE_ADVANCED, CLUE_TEAM, MAX_ATTEMPTS, SUGGESTED_PLAYERS,
    GameController, Status,
    comparison_rows, comparison_table, configure_logging,
    render_advanced_chart, render_pr_chart,
)

app = Flask(__name__)
app.secret_key = os.environ.get('SECRET_KEY', 'guess-the-player-secret-2025')

# Global shared state
GLOBAL = {
    "controllers": {},
    "controller_factory": GameController,
    "output_dir": "./output",
    "max_controllers": 500,
}
_controllers_lock = threading.Lock()


def get_session_hash():
    """Per-browser key, created on first visit."""
    if 'session_hash' not in session:
        session['session_hash'] = hashlib.md5(os.urandom(16)).hexdigest()[:8]
        session.modified = True
    return session['session_hash']


def get_controller():
    """The GameController for this browser; least recently used ones are dropped."""
    key = get_session_hash()
    controllers = GLOBAL["controllers"]
    with _controllers_lock:
        controller = controllers.pop(key, None)
        if controller is None:
            controller = GLOBAL["controller_factory"]()
        controllers[key] = controller
        while len(controllers) > GLOBAL["max_controllers"]:
            stale = next(iter(controllers))
            del controllers[stale]
            logger.debug(f"Dropped game for browser {stale}")
        return controller


def get_image_path(kind):
    """Image path for this browser and chart kind."""
    os.makedirs(GLOBAL["output_dir"], exist_ok=True)
    return os.path.join(GLOBAL["output_dir"], f"player_{get_session_hash()}_{kind}.png")


def source_hosts(urls):
    hosts = []
    for url in urls:
        host = urlparse(url).hostname
        if host:
            hosts.append({"url": url, "host": host})
    return hosts


def serialize_state(game_session):
    """What the page is allowed to see about the current round."""
    record = game_session.secret_record
    finished = game_session.status in (Status.WON, Status.LOST)
    clues = game_session.clues_unlocked

    guesses = []
    for idx, guess in enumerate(game_session.guesses):
        rows = None
        if guess.comparison_data is not None and record is not None:
            rows = comparison_rows(comparison_table(record.stats, guess.comparison_data.stats))
        guesses.append({
            "index": idx,
            "text": guess.display_name,
            "correct": guess.is_correct,
            "loading": guess.is_loading,
            "error": guess.comparison_error,
            "comparison": rows,
        })

    state = {
        "status": game_session.status.value,
        "round_id": game_session.round_id,
        "error_message": game_session.error_message,
        "max_attempts": MAX_ATTEMPTS,
        "attempts_left": game_session.attempts_left,
        "guesses": guesses,
        "suggestions": SUGGESTED_PLAYERS,
        "show_team": CLUE_TEAM in clues,
        "show_advanced": CLUE_ADVANCED in clues,
        "year": None,
        "type": None,
        "stats": [],
        "team": None,
        "player_name": None,
        "sources": [],
    }
    if record is not None:
        state.update({
            "year": record.year,
            "type": record.type,
            "stats": [{"label": s.label, "value": s.value, "pr": s.percentile_rank} for s in record.stats],
            "team": record.team if CLUE_TEAM in clues or finished else None,
            "player_name": record.name if finished else None,
            "sources": source_hosts(record.source_urls),
        })
    return state


HTML = """<!DOCTYPE html><html><head><meta charset="utf-8"><meta name="viewport" content="width=device-width,initial-scale=1"><title>⚾ Guess The Player</title><style>*{margin:0;padding:0;box-sizing:border-box}body{font-family:Arial,sans-serif;background:#f4f6f9;color:#1a1a1a;min-height:100vh}.topbar{background:#fff;border-bottom:1px solid #ddd;padding:12px 24px;position:sticky;top:0;z-index:10}.topbar-content{max-width:820px;margin:0 auto;display:flex;justify-content:space-between;align-items:center}.topbar h1{color:#1d3f73;font-size:22px}.year{font-size:12px;color:#666;border:1px solid #ccc;border-radius:4px;padding:0 4px;margin-left:8px}.link{background:none;border:none;color:#555;text-decoration:underline;cursor:pointer;font-size:14px}.container{max-width:820px;margin:0 auto;padding:24px 16px}.card{background:#fff;border-radius:8px;padding:16px;box-shadow:0 1px 4px rgba(0,0,0,0.1);margin-bottom:16px}.banner{padding:12px 16px;border-radius:6px;margin-bottom:16px}.won{background:#d4edda;color:#155724}.lost{background:#f8d7da;color:#721c24}.chart{width:100%}.clue-title{font-size:12px;color:#777;font-weight:700;text-transform:uppercase}.team{font-size:24px;font-weight:700;color:#1d3f73;margin-top:4px}.guess{border:1px solid #eee;border-radius:8px;margin-bottom:12px;overflow:hidden}.guess-head{display:flex;justify-content:space-between;padding:10px 14px;background:#fafafa;font-weight:700}.guess.correct{border-color:#28a745}.tag{font-size:12px;padding:2px 8px;border-radius:12px}.tag-ok{background:#c3e6cb;color:#155724}.tag-no{background:#f8d7da;color:#721c24}.guess-body{padding:8px 14px}.err{color:#c00;background:#fdecea;padding:8px;border-radius:4px;font-size:14px}.btn{padding:12px 24px;font-size:14px;font-weight:700;border:none;border-radius:6px;cursor:pointer;color:#fff;background:#1d3f73}.btn:disabled{opacity:0.5;cursor:not-allowed}.btn-compare{width:100%;background:#eef2f8;color:#1d3f73;padding:8px}.guess-area{display:flex;gap:8px;margin-top:16px}.guess-input{flex:1;padding:12px;font-size:16px;border:2px solid #1d3f73;border-radius:6px}.guess-input:disabled{background:#f0f0f0;border-color:#ccc}.center{text-align:center;padding:80px 16px;color:#1d3f73;font-weight:700}.footer{font-size:11px;color:#777;text-align:center;padding:16px}.footer a{color:#1d3f73;margin:0 6px}</style></head><body><div class="topbar"><div class="topbar-content"><h1>Guess The Player<span class="year" id="year"></span></h1><button class="link" onclick="newGame()">新遊戲</button></div></div><div class="container"><div id="loading" class="center" style="display:none">正在從 野球革命 (Rebas.tw) 隨機搜尋球員數據...</div><div id="error" class="center" style="display:none"><p id="errorMsg" style="margin-bottom:16px"></p><button class="btn" onclick="newGame()">重試</button></div><div id="game" style="display:none"><div id="banner"></div><div class="card"><img id="prChart" class="chart" src="" alt="PR"></div><div id="teamClue" class="card" style="display:none"><p class="clue-title">Clue 1: Team</p><p class="team" id="team"></p></div><div id="advClue" class="card" style="display:none"><p class="clue-title">Clue 2: Advanced Data</p><img id="advChart" class="chart" src="" alt="Advanced"></div><div id="guessesArea"></div><form class="guess-area" onsubmit="submitGuess();return false"><input id="guessInput" class="guess-input" type="text" list="players" autocomplete="off"><datalist id="players"></datalist><button id="btnGuess" class="btn" type="submit">猜測</button></form></div></div><div class="footer" id="sources"></div><script>function show(id,on){document.getElementById(id).style.display=on?"block":"none"}function render(d){show("loading",d.status==="loading");show("error",d.status==="error");show("game",["playing","won","lost"].includes(d.status));document.getElementById("errorMsg").textContent=d.error_message||"";document.getElementById("year").textContent=d.year||"";if(!["playing","won","lost"].includes(d.status))return;const t=Date.now();document.getElementById("prChart").src="/chart/secret.png?"+t;const b=document.getElementById("banner");b.innerHTML="";if(d.status==="won"||d.status==="lost"){const div=document.createElement("div");div.className="banner "+d.status;div.textContent=(d.status==="won"?"恭喜！":"遊戲結束。")+" 答案是 "+d.player_name+" ("+d.team+")。";b.appendChild(div)}show("teamClue",d.show_team);document.getElementById("team").textContent=d.team||"";show("advClue",d.show_advanced);if(d.show_advanced)document.getElementById("advChart").src="/chart/advanced.png?"+t;const ga=document.getElementById("guessesArea");ga.innerHTML="";d.guesses.slice().reverse().forEach(g=>{const box=document.createElement("div");box.className="guess"+(g.correct?" correct":"");const head=document.createElement("div");head.className="guess-head";const nm=document.createElement("span");nm.textContent=g.text;const tag=document.createElement("span");tag.className="tag "+(g.correct?"tag-ok":"tag-no");tag.textContent=g.correct?"正確":"錯誤";head.appendChild(nm);head.appendChild(tag);box.appendChild(head);if(!g.correct){const body=document.createElement("div");body.className="guess-body";if(g.comparison){const img=document.createElement("img");img.className="chart";img.src="/chart/guess/"+g.index+".png?"+t;body.appendChild(img)}else if(g.error){const e=document.createElement("div");e.className="err";e.textContent=g.error;body.appendChild(e)}else if(g.loading){body.textContent="正在搜尋數據..."}else{const btn=document.createElement("button");btn.className="btn btn-compare";btn.textContent="📊 點擊比對數據";btn.onclick=()=>compare(g.index,btn);body.appendChild(btn)}box.appendChild(body)}ga.appendChild(box)});const inp=document.getElementById("guessInput");const playing=d.status==="playing";inp.disabled=!playing;document.getElementById("btnGuess").disabled=!playing;inp.placeholder=playing?"輸入球員名字 (剩餘 "+d.attempts_left+" 次)":"遊戲結束";const dl=document.getElementById("players");dl.innerHTML="";d.suggestions.forEach(s=>{const o=document.createElement("option");o.value=s;dl.appendChild(o)});const src=document.getElementById("sources");src.innerHTML="";if(d.sources.length){src.appendChild(document.createTextNode("資料來源: "));d.sources.forEach(s=>{const a=document.createElement("a");a.href=s.url;a.target="_blank";a.rel="noopener noreferrer";a.textContent=s.host;src.appendChild(a)})}}async function post(url,body){const r=await fetch(url,{method:"POST",headers:{"Content-Type":"application/json"},body:JSON.stringify(body||{})});return r.json()}async function newGame(){render({status:"loading",guesses:[],sources:[]});render(await post("/new"))}async function submitGuess(){const inp=document.getElementById("guessInput");const g=inp.value.trim();if(!g)return;inp.value="";render(await post("/guess",{guess:g}))}async function compare(i,btn){btn.disabled=true;btn.textContent="正在搜尋數據...";render(await post("/compare",{index:i}))}fetch("/state").then(r=>r.json()).then(d=>{if(d.status==="loading")newGame();else render(d)})</script></body></html>"""


@app.route("/")
def index():
    get_session_hash()
    return render_template_string(HTML)


@app.route("/state")
def get_state():
    return jsonify(serialize_state(get_controller().session))


@app.route("/new", methods=["POST"])
def new_game():
    return jsonify(serialize_state(get_controller().new_game()))


@app.route("/guess", methods=["POST"])
def guess():
    data = request.get_json(silent=True) or {}
    guess_text = str(data.get("guess") or "").strip()
    return jsonify(serialize_state(get_controller().submit(guess_text)))


@app.route("/compare", methods=["POST"])
def compare():
    data = request.get_json(silent=True) or {}
    try:
        index = int(data.get("index"))
    except (TypeError, ValueError):
        return jsonify({"error": "index is required"}), 400
    return jsonify(serialize_state(get_controller().compare(index)))


@app.route("/chart/secret.png")
def secret_chart():
    record = get_controller().session.secret_record
    if record is None:
        return "No image", 404
    img_path = get_image_path("secret")
    render_pr_chart(record.stats, img_path, player_type=record.type)
    return send_file(os.path.abspath(img_path), mimetype="image/png")


@app.route("/chart/advanced.png")
def advanced_chart():
    game_session = get_controller().session
    if game_session.secret_record is None or CLUE_ADVANCED not in game_session.clues_unlocked:
        return "No image", 404
    img_path = get_image_path("advanced")
    render_advanced_chart(game_session.secret_record, img_path)
    return send_file(os.path.abspath(img_path), mimetype="image/png")


@app.route("/chart/guess/<int:index>.png")
def guess_chart(index):
    game_session = get_controller().session
    record = game_session.secret_record
    if record is None or index >= len(game_session.guesses):
        return "No image", 404
    other = game_session.guesses[index].comparison_data
    if other is None:
        return "No image", 404
    img_path = get_image_path(f"guess{index}")
    render_pr_chart(record.stats, img_path, player_type=record.type,
                    title="Comparison PR", compare_stats=other.stats)
    return send_file(os.path.abspath(img_path), mimetype="image/png")


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--output-dir", type=str, default=None)
    parser.add_argument("--env-file", default=".env", help="Path to .env file")
    args = parser.parse_args()

    load_dotenv(args.env_file, override=False)
    configure_logging()

    GLOBAL["output_dir"] = args.output_dir or "./output"
    os.makedirs(GLOBAL["output_dir"], exist_ok=True)

    if not os.getenv("OPENAI_API_KEY"):
        logger.warning("OPENAI_API_KEY is not set; every round will fail to load")

    port = args.port or int(os.environ.get("PORT", 5050))
    logger.info(f"Starting on port {port}")
    app.run(host="0.0.0.0", port=port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
