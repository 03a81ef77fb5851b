"""Reference renderer programs.

The canvas (1950x2400) is provided by the renderer. These programs never
size it themselves and drive all randomness through the seeded random()
and noise() primitives, so they pass preflight without warnings.
"""

CANVAS_WIDTH = 1950
CANVAS_HEIGHT = 2400
PROTOCOL = "nexart"
PROTOCOL_VERSION = "1.2.0"

_BACKTEST_PROGRAM = """
// Code Mode - Backtest Visualization
// Protocol: nexart v1.2.0
// Canvas: 1950x2400 (provided by runtime)

function setup() {
  background(15, 15, 20);
  noLoop();
}

function draw() {
  const horizon = map(VAR[0], 0, 100, 30, 365);
  const drift = map(VAR[1], 0, 100, -0.3, 0.5);
  const volatility = map(VAR[2], 0, 100, 0.05, 0.8);
  const leverage = map(VAR[3], 0, 100, 0.5, 3.0);
  const fees = map(VAR[4], 0, 100, 0, 0.02);
  const rebalance = map(VAR[5], 0, 100, 0.1, 1.0);
  const shockFreq = map(VAR[6], 0, 100, 0.01, 0.2);
  const shockMag = map(VAR[7], 0, 100, 0.1, 0.5);
  const meanRev = map(VAR[8], 0, 100, 0, 0.3);
  const density = floor(map(VAR[9], 0, 100, 50, 500));

  const points = [];
  let equity = 100000;
  let peak = equity;

  for (let i = 0; i < density; i++) {
    const r1 = random();
    const r2 = random();
    let dailyReturn = (drift / 252) + (volatility / sqrt(252)) * (r1 - 0.5) * 2;
    if (r2 < shockFreq) {
      dailyReturn += (r1 - 0.5) * shockMag * (r2 < shockFreq / 2 ? -1 : 1);
    }
    const deviation = (equity - 100000) / 100000;
    dailyReturn -= deviation * meanRev * 0.01 * rebalance;
    dailyReturn = dailyReturn * leverage - fees / 252;
    equity = equity * (1 + dailyReturn);
    peak = max(peak, equity);
    points.push({ equity, peak, drawdown: (equity - peak) / peak });
  }

  const chartX = 120;
  const chartY = 200;
  const chartW = width - 240;
  const chartH = height / 2;
  const lo = min(...points.map(p => p.equity));
  const hi = max(...points.map(p => p.peak));
  const span = max(hi - lo, 1);

  fill(25, 25, 35);
  noStroke();
  rect(chartX, chartY, chartW, chartH);

  fill(180, 40, 60, 60);
  beginShape();
  for (let i = 0; i < points.length; i++) {
    const x = chartX + (i / (points.length - 1)) * chartW;
    vertex(x, chartY + chartH - ((points[i].peak - lo) / span) * chartH);
  }
  for (let i = points.length - 1; i >= 0; i--) {
    const x = chartX + (i / (points.length - 1)) * chartW;
    vertex(x, chartY + chartH - ((points[i].equity - lo) / span) * chartH);
  }
  endShape(CLOSE);

  stroke(80, 200, 120);
  strokeWeight(3);
  noFill();
  beginShape();
  for (let i = 0; i < points.length; i++) {
    const x = chartX + (i / (points.length - 1)) * chartW;
    vertex(x, chartY + chartH - ((points[i].equity - lo) / span) * chartH);
  }
  endShape();

  const finalEquity = points[points.length - 1].equity;
  const cagr = pow(finalEquity / 100000, 365 / horizon) - 1;
  const maxDrawdown = min(...points.map(p => p.drawdown));

  noStroke();
  fill(255);
  textFont('monospace');
  textSize(40);
  text('CAGR ' + nf(cagr * 100, 1, 2) + '%', chartX, chartY + chartH + 120);
  text('MAX DD ' + nf(maxDrawdown * 100, 1, 2) + '%', chartX, chartY + chartH + 200);
  text('FINAL ' + nf(finalEquity, 1, 0), chartX, chartY + chartH + 280);
}
"""

_CLAIM_PROGRAM = """
// Code Mode - Claim Visualization
// Protocol: nexart v1.2.0
// Canvas: 1950x2400 (provided by runtime)

function setup() {
  background(15, 15, 20);
  noLoop();
}

function draw() {
  const density = floor(map(VAR[0], 0, 100, 20, 100));
  const hue1 = map(VAR[1], 0, 100, 0, 360);
  const hue2 = map(VAR[2], 0, 100, 0, 360);
  const weight = map(VAR[3], 0, 100, 1, 4);

  fill(22, 22, 28);
  noStroke();
  rect(60, 60, width - 120, height - 120, 8);

  colorMode(HSB, 360, 100, 100, 100);
  strokeWeight(weight);
  for (let i = 0; i < density; i++) {
    const t = i / density;
    stroke(lerp(hue1, hue2, t), 60, 90, 50);
    const x = 120 + random() * (width - 240);
    const y = 300 + noise(i * 0.1) * (height - 600);
    line(x, y, x + random() * 200, y + random() * 200);
  }

  colorMode(RGB);
  fill(255);
  noStroke();
  textFont('monospace');
  textSize(36);
  text('SEALED CLAIM', 100, 150);
}
"""


def backtest_program() -> str:
    """Program used for certified backtest renders."""
    return _BACKTEST_PROGRAM


def claim_program() -> str:
    """Program used for generic claim renders."""
    return _CLAIM_PROGRAM
